from ssr.cli import main

raise SystemExit(main())
