from skogsnet.main import main

main()
