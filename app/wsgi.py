from app.servicequeue import create_app

app = create_app()
