import logging

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from .db import Base, engine
from .settings import settings
from .routers import auth
from .routers import chat

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger("passlib").setLevel(logging.ERROR)

app = FastAPI(title="AI Tutor API")
app.include_router(auth.router)
app.include_router(chat.router)


@app.get("/", include_in_schema=False)
async def redirect_root_to_docs():
	return RedirectResponse(url="/docs")


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"openrouter_configured": bool(settings.openrouter_api_key),
		"languages": settings.supported_languages,
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)


@app.on_event("shutdown")
async def shutdown_event():
	await chat.close_gateway()
