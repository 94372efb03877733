import uvicorn

from storefront.app import create_app
from storefront.config import Config


CONFIG = Config()


app = create_app(CONFIG)


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=CONFIG.debug)
