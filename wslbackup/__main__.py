from wslbackup.cli import main

main()
