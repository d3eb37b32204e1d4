import uvicorn

from common.config import HOST, PORT
from intake.server import Server

server = Server()
app = server.app

if __name__ == "__main__":
    uvicorn.run("intake.main:app", host=HOST, port=PORT, reload=False)
