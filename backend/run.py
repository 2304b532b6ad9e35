from wagerplay import create_app, socketio
from wagerplay.services.matches.scheduler import start_sweeper

app = create_app()

if __name__ == '__main__':
    start_sweeper(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
