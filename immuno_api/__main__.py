from immuno_api.server import main

main()
