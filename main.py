from fastapi import FastAPI, UploadFile, File, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import anyio
import os
import json
import time
import logging
import traceback
from datetime import datetime

from config import Config
from capture_parser import ExtractionError
from processor import InvalidAmountFields, load_invoice_file
from API_EFILING import EFilingService, BatchTimeoutError

# Setup Logging
logging.basicConfig(level=Config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI()

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

efiling_service = EFilingService()


def error_response(status_code, message, **extra):
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message, **extra})


async def run_batch(text_js_content, invoices):
    """Run the blocking batch in a worker thread under the batch time budget."""
    if not isinstance(invoices, list) or not all(isinstance(i, dict) for i in invoices):
        return error_response(400, "jsonData must be an array of invoice objects")

    deadline = time.monotonic() + Config.BATCH_TIMEOUT
    try:
        # Run blocking batch submission in a separate thread to keep server responsive
        report = await anyio.to_thread.run_sync(
            efiling_service.process_data, text_js_content, invoices, deadline
        )
        return {"status": "completed", **report.to_dict()}
    except BatchTimeoutError as e:
        logger.error(f"Batch timed out: {e}")
        return error_response(504, str(e), report=e.report.to_dict())
    except (ExtractionError, InvalidAmountFields) as e:
        logger.error(f"Batch rejected: {e}")
        return error_response(500, f"Batch rejected: {e}", reason=type(e).__name__)
    except Exception as e:
        logger.error(f"Batch processing failed: {e}")
        logger.error(traceback.format_exc())
        return error_response(500, f"Error processing data: {e}")


@app.get("/test")
async def test_endpoint():
    logger.info("Test endpoint reached")
    return {"status": "ok"}


@app.post("/api/process")
async def api_process(request: Request):
    """Replay the captured request once per invoice in jsonData."""
    try:
        data = await request.json()
    except ValueError:
        return error_response(400, "Invalid JSON format")

    text_js_content = data.get("textJsContent") if isinstance(data, dict) else None
    json_data = data.get("jsonData") if isinstance(data, dict) else None
    if not isinstance(text_js_content, str) or not text_js_content.strip() or not json_data:
        return error_response(400, "Missing required fields")

    if isinstance(json_data, str):
        try:
            json_data = json.loads(json_data)
        except ValueError:
            return error_response(400, "Invalid JSON format")

    logger.info(f"Processing request with {len(json_data) if isinstance(json_data, list) else 'N/A'} invoices")
    return await run_batch(text_js_content, json_data)


@app.post("/api/process-file")
async def api_process_file(textJsContent: str = Form(...), file: UploadFile = File(...)):
    """Same as /api/process, with invoice rows read from a CSV/Excel upload."""
    try:
        logger.info(f"--- Processing New Upload: {file.filename} ---")
        content = await file.read()

        ext = os.path.splitext((file.filename or "").lower())[1] or '.csv'
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        os.makedirs(Config.UPLOAD_DIR, exist_ok=True)
        archive_path = os.path.join(Config.UPLOAD_DIR, f"upload_{timestamp}{ext}")
        with open(archive_path, "wb") as f:
            f.write(content)
        logger.info(f"Archived uploaded file to {archive_path}")

        invoices = load_invoice_file(archive_path)
    except Exception as e:
        logger.error(f"Error reading upload: {e}")
        logger.error(traceback.format_exc())
        return error_response(400, str(e))

    if not invoices:
        return error_response(400, "Uploaded file contains no invoice rows")
    return await run_batch(textJsContent, invoices)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
