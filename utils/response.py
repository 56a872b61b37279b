from flask import jsonify


def json_response(message="success", data=None, code=200):
    resp = jsonify({"code": code, "message": message, "data": data})
    resp.status_code = code
    return resp


def raw_json_response(payload, code=200):
    """Unwrapped body, used by the peer sync endpoint whose wire shape is fixed."""
    resp = jsonify(payload)
    resp.status_code = code
    return resp
