# main.py
from fastapi import FastAPI, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, FileResponse
import os
import shutil
import uuid
import json
import logging
from backend import DataManager, EXPORT_FILES
from config import load_settings, configure_logging
from fields import COLLECTIONS
from validation import summarize
from rules import RuleNotAcceptable

settings = load_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Data Alchemist")

# Enable CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

UPLOAD_DIR = settings.upload_dir
EXPORT_DIR = settings.export_dir

# File to store the current file paths
CURRENT_FILES_PATH = "current_files.json"

# Global DataManager instance to persist data across requests
global_data_manager = None


def get_or_create_data_manager():
    """Get the global data manager, reloading the last uploaded files if needed"""
    global global_data_manager

    if global_data_manager is not None:
        return global_data_manager

    if os.path.exists(CURRENT_FILES_PATH):
        try:
            with open(CURRENT_FILES_PATH, 'r') as f:
                file_paths = json.load(f)

            if all(os.path.exists(path) for path in file_paths.values()):
                logger.info("Reloading data from stored files: %s", file_paths)
                dm = DataManager(settings)
                dm.load_files(file_paths['clients'], file_paths['workers'], file_paths['tasks'])
                global_data_manager = dm
                return global_data_manager
        except Exception:
            logger.exception("Failed to reload data from %s", CURRENT_FILES_PATH)

    return None


def save_current_files(clients_path, workers_path, tasks_path):
    """Save the current file paths for reloading after server restart"""
    file_paths = {
        'clients': clients_path,
        'workers': workers_path,
        'tasks': tasks_path
    }
    with open(CURRENT_FILES_PATH, 'w') as f:
        json.dump(file_paths, f)


def save_upload_file(upload_file: UploadFile) -> str:
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    file_id = str(uuid.uuid4())
    file_path = os.path.join(UPLOAD_DIR, f"{file_id}_{os.path.basename(upload_file.filename or 'upload.csv')}")
    with open(file_path, "wb") as buffer:
        shutil.copyfileobj(upload_file.file, buffer)
    return file_path


def error_response(status_code: int, message: str, **extra):
    content = {"status": "error", "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def no_data_response():
    return error_response(400, "No data loaded. Please upload files first.")


def findings_payload(dm: DataManager):
    return {
        "findings": [f.to_dict() for f in dm.findings],
        "summary": summarize(dm.findings),
    }


@app.post("/upload")
async def upload_files(
    clients: UploadFile = File(...),
    workers: UploadFile = File(...),
    tasks: UploadFile = File(...)
):
    try:
        clients_path = save_upload_file(clients)
        workers_path = save_upload_file(workers)
        tasks_path = save_upload_file(tasks)
        logger.info("Files saved: %s, %s, %s", clients_path, workers_path, tasks_path)

        global global_data_manager
        dm = DataManager(settings)
        dm.load_files(clients_path, workers_path, tasks_path)

        if not dm.has_data():
            return error_response(400, "Failed to load data from files")

        global_data_manager = dm
        save_current_files(clients_path, workers_path, tasks_path)

        return {
            "status": "success",
            **findings_payload(dm),
            "data": dm.dataset,
            "headerMappings": dm.header_mappings,
            "counts": {name: len(getattr(dm, name)) for name in COLLECTIONS},
        }
    except Exception as e:
        logger.exception("Error in upload endpoint")
        return error_response(500, str(e))


@app.get("/validate")
async def validate():
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        dm.validate_all()
        return {"status": "success", "state": dm.last_run.state, **findings_payload(dm)}
    except Exception as e:
        logger.exception("Error in validate endpoint")
        return error_response(500, str(e))


@app.patch("/data/{collection}/{row}")
async def update_cell(collection: str, row: int, request: dict):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        field = request.get("field")
        if not field or "value" not in request:
            return error_response(400, "Both 'field' and 'value' are required")

        dm.update_cell(collection, row, field, request["value"])
        return {"status": "success", "record": getattr(dm, collection)[row], **findings_payload(dm)}
    except IndexError as e:
        return error_response(404, str(e))
    except ValueError as e:
        return error_response(400, str(e))
    except Exception as e:
        logger.exception("Error in update endpoint")
        return error_response(500, str(e))


@app.post("/search")
async def search(query: str = Form(...), collection: str = Form("clients")):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()
        if collection not in COLLECTIONS:
            return error_response(400, f"Unknown collection '{collection}'")

        result = dm.search(query, collection)
        return {"status": "success", "collection": collection, **result.to_dict()}
    except Exception as e:
        logger.exception("Error in search endpoint")
        return error_response(500, str(e))


@app.post("/rules/convert")
async def convert_rule(request: dict):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        user_input = request.get("input", "")
        if not user_input or not user_input.strip():
            return error_response(400, "No input provided")

        parsed = dm.convert_rule(user_input)
        if parsed is None:
            return {"status": "error", "message": "Could not understand rule"}
        return {"status": "success", "rule": parsed.to_dict(), "acceptable": parsed.is_acceptable}
    except Exception as e:
        logger.exception("Error in rule conversion endpoint")
        return error_response(500, str(e))


@app.get("/rules")
async def list_rules():
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        return {
            "status": "success",
            "rules": dm.rules.to_list(),
            "active": len(dm.rules.active_rules()),
        }
    except Exception as e:
        return error_response(500, str(e))


@app.post("/rules")
async def add_rule(request: dict):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        priority = int(request.get("priority", 1))

        # Rule builder path: an explicit type and parameters
        if request.get("type"):
            rule = dm.create_rule(
                request["type"], request.get("parameters") or {},
                name=request.get("name"), description=request.get("description", ""),
                priority=priority,
            )
            return {"status": "success", "rule": rule.to_dict()}

        user_input = request.get("input", "")
        if not user_input or not user_input.strip():
            return error_response(400, "No input provided")

        rule = dm.add_rule_from_nl(user_input, priority=priority, override=bool(request.get("override", False)))
        if rule is None:
            return {"status": "error", "message": "Could not understand rule"}
        return {"status": "success", "rule": rule.to_dict()}
    except RuleNotAcceptable as e:
        return error_response(409, str(e))
    except ValueError as e:
        return error_response(400, str(e))
    except Exception as e:
        logger.exception("Error in add rule endpoint")
        return error_response(500, str(e))


@app.post("/rules/{rule_id}/toggle")
async def toggle_rule(rule_id: str):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        rule = dm.toggle_rule(rule_id)
        return {"status": "success", "rule": rule.to_dict()}
    except KeyError:
        return error_response(404, f"Rule '{rule_id}' not found")
    except Exception as e:
        return error_response(500, str(e))


@app.delete("/rules/{rule_id}")
async def delete_rule(rule_id: str):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        rule = dm.delete_rule(rule_id)
        return {"status": "success", "deleted": rule.id}
    except KeyError:
        return error_response(404, f"Rule '{rule_id}' not found")
    except Exception as e:
        return error_response(500, str(e))


@app.post("/priorities")
async def set_priorities(request: dict):
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        if request.get("preset"):
            dm.apply_preset(request["preset"])
        if request.get("weights"):
            dm.set_priorities(request["weights"])
        toggle = request.get("toggle")
        if toggle:
            dm.prioritization.toggle_priority(toggle["list"], toggle["item"])

        return {
            "status": "success",
            **dm.prioritization.to_dict(),
            "normalizedWeights": dm.prioritization.normalized_weights(),
        }
    except (ValueError, KeyError) as e:
        return error_response(400, str(e))
    except Exception as e:
        return error_response(500, str(e))


@app.get("/export")
async def export_payloads():
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        return {"status": "success", "payloads": dm.export_payloads()}
    except Exception as e:
        logger.exception("Error in export endpoint")
        return error_response(500, str(e))


@app.post("/export")
async def export_data():
    try:
        dm = get_or_create_data_manager()
        if not dm:
            return no_data_response()

        output_dir = dm.export_all(EXPORT_DIR)
        names = [f"{name}.csv" for name in COLLECTIONS] + list(EXPORT_FILES.values())
        exported_files = [
            {"name": name, "type": name.rsplit(".", 1)[1]}
            for name in names if os.path.exists(os.path.join(output_dir, name))
        ]
        return {
            "status": "success",
            "message": f"Data exported successfully to {output_dir}",
            "export_directory": output_dir,
            "files": exported_files,
        }
    except Exception as e:
        logger.exception("Error in export endpoint")
        return error_response(500, str(e))


@app.get("/download/{filename}")
async def download_file(filename: str):
    file_path = os.path.join(EXPORT_DIR, os.path.basename(filename))
    if not os.path.isfile(file_path):
        return error_response(404, f"File '{filename}' not found")
    return FileResponse(file_path, filename=os.path.basename(filename))
