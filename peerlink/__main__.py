from peerlink.app import main

main()
