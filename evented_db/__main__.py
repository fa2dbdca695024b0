from evented_db.main import main

main()
