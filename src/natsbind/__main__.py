from natsbind.cli import main

main()
