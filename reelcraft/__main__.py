from reelcraft.runner import main

main()
