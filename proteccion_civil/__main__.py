from proteccion_civil.app import main

main()
