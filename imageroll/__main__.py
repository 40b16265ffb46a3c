from imageroll.cli import main

main()
