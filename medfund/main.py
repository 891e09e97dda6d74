from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from scalar_fastapi import get_scalar_api_reference

from medfund.campaigns.routes import router as campaigns_router
from medfund.storage.routes import router as ipfs_router

app = FastAPI(title="MedFund IPFS")


@app.get("/scalar", include_in_schema=False)
async def scalar_html():
    return get_scalar_api_reference(
        openapi_url=app.openapi_url,
        title=app.title,
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    The pointer endpoints answer malformed bodies with the same ``{error, message}``
    envelope as their other failures; every other route keeps FastAPI's 422.
    """
    if request.url.path.startswith(ipfs_router.prefix + "/"):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "message": str(exc.errors())},
        )
    return await request_validation_exception_handler(request, exc)


@app.get("/", include_in_schema=False)
async def redirect_to_docs():
    """
    Redirects users from the root endpoint to the docs endpoint.
    """
    return RedirectResponse(url="/docs")


@app.get("/health")
def read_root():
    return {"status": "Service is live"}


app.include_router(ipfs_router)
app.include_router(campaigns_router)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
