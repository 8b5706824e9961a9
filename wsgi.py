from evalpipe import create_app

app = create_app()
