"""WSGI entry point: ``gunicorn -c python:notes_app.gunicorn_conf notes_app.wsgi:app``."""

from notes_app.app import create_app

app = create_app()

if __name__ == "__main__":
    # Development server only; production traffic goes through gunicorn.
    app.run(host="127.0.0.1", port=5000)
