from gasline import create_app

app = create_app()
