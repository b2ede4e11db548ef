from cart_service.api.server import main

main()
