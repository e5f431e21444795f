from labctl.main import main

main()
