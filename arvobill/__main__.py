from arvobill.cli import main

main()
