from chat_client.cli import main

raise SystemExit(main())
