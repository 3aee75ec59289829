from muralla import create_app

app = create_app()
