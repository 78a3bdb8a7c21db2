# FILE: g4-geometry-editor/app.py

import os
import uuid

from flask import Flask, request, jsonify, session
from flask_cors import CORS
from dotenv import load_dotenv

from g4editor.expression_evaluator import ExpressionEvaluator
from g4editor.project_manager import ProjectManager

# Load environment variables from .env file
load_dotenv()

app = Flask(__name__)
app.secret_key = os.getenv("FLASK_SECRET_KEY", "a-default-secret-key-for-development")
CORS(app)

# --- Read server-wide config on startup ---
APP_MODE = os.getenv("APP_MODE", "local")  # Default to 'local' if not set
SERVER_PORT = int(os.getenv("G4EDITOR_PORT", "5003"))


# ------------------------------------------------------------------------------
# Session management

# --- Server-Side Cache for Project Managers ---
# This dictionary holds one ProjectManager instance per user session.
# The key is the user's session ID (uuid).
project_managers = {}

def get_project_manager_for_session() -> ProjectManager:
    """
    Retrieves or creates a ProjectManager instance for the current user session.
    """
    if APP_MODE == 'local':
        # In local mode, everyone shares the same "local_user" ID
        if 'user_id' not in session or session['user_id'] != 'local_user':
            session['user_id'] = 'local_user'
    else: # deployed mode
        if 'user_id' not in session:
            session['user_id'] = str(uuid.uuid4())

    user_id = session['user_id']

    if user_id not in project_managers:
        print(f"Creating new session and ProjectManager for user_id: {user_id}")
        pm = ProjectManager(ExpressionEvaluator())
        pm.create_empty_project()
        project_managers[user_id] = pm

    return project_managers[user_id]


# --- Helper Functions ---

def create_success_response(project_manager, message="Success"):
    """
    Helper to create a standard success response object, including history state.
    """
    return jsonify({
        "success": True,
        "message": message,
        "project_name": project_manager.project_name,
        "project_state": project_manager.get_full_project_state_dict(),
        "scene_update": project_manager.get_scene_description(),
        "diagnostics": project_manager.get_diagnostics(),
        "response_type": "full",
        "history_status": project_manager.get_history_status()
    })

def create_shallow_response(project_manager, message, project_state_patch=None, full_scene=None):
    """Creates a lightweight response with a patch and possibly the full scene update."""
    patch = {}
    if project_state_patch:
        patch['project_state'] = project_state_patch

    return jsonify({
        "success": True,
        "message": message,
        "patch": patch,
        "project_name": project_manager.project_name,
        "scene_update": full_scene,
        "response_type": "patch",
        "history_status": project_manager.get_history_status()
    })

def error_response(message, status):
    return jsonify({"success": False, "error": message}), status

def _status_for(error_msg):
    if error_msg and "not found" in error_msg:
        return 404
    if error_msg and ("drag" in error_msg or "dragged" in error_msg):
        return 409
    return 400


# ------------------------------------------------------------------------------
# Project routes

@app.route('/new_project', methods=['POST'])
def new_project_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    pm.create_empty_project(data.get('world_size'))
    return create_success_response(pm, "New project created.")

@app.route('/api/project', methods=['GET'])
def get_project_route():
    pm = get_project_manager_for_session()
    return create_success_response(pm, "Project state.")

@app.route('/load_project_json', methods=['POST'])
def load_project_json_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True)
    if data is None:
        return error_response("Request body must be a JSON project document.", 400)

    success, error_msg = pm.load_project_from_json_string(request.get_data(as_text=True))
    if success:
        return create_success_response(pm, "Project loaded.")
    return error_response(error_msg, 400)

@app.route('/save_project_json', methods=['GET'])
def save_project_json_route():
    pm = get_project_manager_for_session()
    return app.response_class(pm.save_project_to_json_string(), mimetype='application/json')

@app.route('/api/begin_transaction', methods=['POST'])
def begin_transaction_route():
    pm = get_project_manager_for_session()
    pm.begin_transaction()
    return jsonify({"success": True, "message": "Transaction started."})

@app.route('/api/end_transaction', methods=['POST'])
def end_transaction_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    pm.end_transaction(data.get('description', 'User action'))
    return create_success_response(pm, "Transaction ended.")

@app.route('/api/undo', methods=['POST'])
def undo_route():
    pm = get_project_manager_for_session()
    success, message = pm.undo()
    if success:
        return create_success_response(pm, message)
    return error_response(message, 400)

@app.route('/api/redo', methods=['POST'])
def redo_route():
    pm = get_project_manager_for_session()
    success, message = pm.redo()
    if success:
        return create_success_response(pm, message)
    return error_response(message, 400)


# ------------------------------------------------------------------------------
# Volume routes

@app.route('/api/add_volume', methods=['POST'])
def add_volume_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    volume_type = data.get('type')
    if not volume_type:
        return error_response("Missing volume type.", 400)

    new_volume, error_msg = pm.add_volume(
        data.get('name'), volume_type,
        data.get('position'), data.get('rotation'),
        data.get('mother_volume'), data.get('dimensions'),
        data.get('boolean')
    )
    if new_volume:
        return create_success_response(pm, f"Volume {new_volume['name']} created.")
    return error_response(error_msg, _status_for(error_msg))

@app.route('/api/update_volume', methods=['POST'])
def update_volume_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    changes = data.get('changes')
    if not name or not isinstance(changes, dict):
        return error_response("Missing data for volume update.", 400)

    success, error_msg = pm.update_volume(name, changes)
    if success:
        return create_success_response(pm, f"Volume {changes.get('name', name)} updated.")
    return error_response(error_msg, _status_for(error_msg))

@app.route('/api/delete_volume', methods=['POST'])
def delete_volume_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not name:
        return error_response("Missing volume name.", 400)

    success, result = pm.delete_volume(name)
    if success:
        return create_success_response(pm, f"Removed {len(result)} volume(s).")
    return error_response(result, _status_for(result))

@app.route('/api/world_pose/<name>', methods=['GET'])
def world_pose_route(name):
    pm = get_project_manager_for_session()
    pose, error_msg = pm.get_world_pose(name)
    if pose is None:
        return error_response(error_msg, 404)
    return jsonify({"success": True, "name": name, "position": pose['position'], "rotation": pose['rotation']})

@app.route('/api/world_to_local', methods=['POST'])
def world_to_local_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not name:
        return error_response("Missing volume name.", 400)

    local, error_msg = pm.world_to_local(name, data.get('position'), data.get('rotation'))
    if local is None:
        return error_response(error_msg, 404)
    return jsonify({"success": True, "name": name, "position": local['position'], "rotation": local['rotation']})

@app.route('/api/mother_candidates', methods=['GET'])
def mother_candidates_route():
    pm = get_project_manager_for_session()
    candidates, error_msg = pm.get_mother_candidates(request.args.get('name'))
    if candidates is None:
        return error_response(error_msg, 404)
    return jsonify({"success": True, "candidates": candidates})

@app.route('/api/diagnostics', methods=['GET'])
def diagnostics_route():
    pm = get_project_manager_for_session()
    return jsonify({"success": True, "diagnostics": pm.get_diagnostics()})


# ------------------------------------------------------------------------------
# Drag routes

@app.route('/api/drag/begin', methods=['POST'])
def begin_drag_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not name:
        return error_response("Missing volume name.", 400)

    mode, error_msg = pm.begin_drag(name)
    if mode is None:
        return error_response(error_msg, _status_for(error_msg))
    return jsonify({"success": True, "message": f"Dragging {name}.", "mode": mode})

@app.route('/api/drag/update', methods=['POST'])
def update_drag_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    name = data.get('name')

    written, error_msg = pm.update_drag(name, data.get('position'), data.get('rotation'))
    if error_msg:
        return error_response(error_msg, 409)

    patch = None
    full_scene = None
    if written is not None:
        # Daughters of the dragged volume move too, so send the whole scene
        patch = {"updated": {"volumes": {name: written}}}
        full_scene = pm.get_scene_description()
    return create_shallow_response(pm, "Drag updated.", patch, full_scene)

@app.route('/api/drag/end', methods=['POST'])
def end_drag_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}
    name = data.get('name')

    local, error_msg = pm.end_drag(name, data.get('position'), data.get('rotation'))
    if error_msg:
        return error_response(error_msg, 409)
    return create_success_response(pm, f"Volume {name} moved." if local else "Drag ended without changes.")

@app.route('/api/drag/cancel', methods=['POST'])
def cancel_drag_route():
    pm = get_project_manager_for_session()
    data = request.get_json(silent=True) or {}

    success, error_msg = pm.cancel_drag(data.get('name'))
    if not success:
        return error_response(error_msg, 409)
    return create_success_response(pm, "Drag cancelled.")


if __name__ == '__main__':
    app.run(debug=True, port=SERVER_PORT)
