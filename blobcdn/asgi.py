from blobcdn.config import Config
from blobcdn.server import create_app

app = create_app(Config.from_env())
