"""
WSGI entry point — gunicorn wsgi:app (threaded workers; sessions are in-process).
"""
from leadchat import create_app

app = create_app()

if __name__ == '__main__':
    import os
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 3000)), threaded=True)
