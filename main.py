import uvicorn

from llmgate.api import create_app
from llmgate.config import get_settings

settings = get_settings()
app = create_app(settings)


if __name__ == "__main__":
    host, port = settings.get_server_config()
    uvicorn.run(app, host=host, port=port)
