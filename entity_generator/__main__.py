from .entity_generator import main

main()
