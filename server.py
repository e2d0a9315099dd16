import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from datavision.backend import Backend
from datavision.exceptions import SessionNotFoundError, TurnInProgressError

logger = logging.getLogger("datavision_server")

SWEEP_INTERVAL_SECONDS = 300

# error_type -> HTTP status for status="error" dispatcher responses
ERROR_STATUS = {
    "InputFormatError": 415,
    "SessionNotFoundError": 404,
    "TurnInProgressError": 409,
}

backend = Backend()


async def _sweep_sessions():
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        removed = backend.cache.sweep_expired()
        if removed:
            logger.debug("SessionCache sweep: removed %d expired sessions", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(_sweep_sessions())
    try:
        yield
    finally:
        task.cancel()


app = FastAPI(lifespan=lifespan)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SelectOptionRequest(BaseModel):
    level: int


class ChatRequest(BaseModel):
    text: str


def _unwrap(response: dict) -> dict:
    if response.get("status") == "success":
        return response
    code = ERROR_STATUS.get(response.get("error_type"), 422)
    raise HTTPException(status_code=code, detail=response.get("message"))


@app.post("/sessions")
def create_session():
    return {"status": "success", "data": backend.create_session()}


@app.get("/sessions/{session_id}")
def load_session(session_id: str):
    return _unwrap(backend._process_request_data({"type": "load_session", "session_id": session_id}))


@app.post("/sessions/{session_id}/upload")
async def upload(session_id: str, file: UploadFile = File(...)):
    file_bytes = await file.read()
    request_data = {
        "type": "upload",
        "session_id": session_id,
        "payload": {"file_name": file.filename, "file_bytes": file_bytes},
    }
    try:
        response = await asyncio.to_thread(backend._process_request_data, request_data)
    except Exception as e:
        logger.error("Analysis request failed for session %s: %s", session_id, e)
        raise HTTPException(status_code=502, detail=f"Analysis service unavailable: {e}")
    return _unwrap(response)


@app.post("/sessions/{session_id}/select")
def select_option(session_id: str, body: SelectOptionRequest):
    request_data = {"type": "select_option", "session_id": session_id, "payload": body.model_dump()}
    return _unwrap(backend._process_request_data(request_data))


@app.post("/sessions/{session_id}/chat")
def chat(session_id: str, body: ChatRequest):
    try:
        events = backend.stream_chat(session_id, body.text)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    def ndjson():
        for event in events:
            yield json.dumps(event, ensure_ascii=False) + "\n"

    return StreamingResponse(ndjson(), media_type="application/x-ndjson")


@app.delete("/sessions/{session_id}")
def reset_session(session_id: str):
    return _unwrap(backend._process_request_data({"type": "reset", "session_id": session_id}))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
