import uvicorn

from blobcdn.config import Config
from blobcdn.server import create_app


def main() -> None:
  config = Config.from_env()
  uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == '__main__':
  main()
