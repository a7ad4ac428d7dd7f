from wilt.cli import main

main()
