import json
from typing import List, Dict, Any


def process_json(file_content: bytes) -> List[Dict[str, Any]]:
    """Process JSON content holding one object or an array of objects."""
    if isinstance(file_content, bytes):
        file_content = file_content.decode('utf-8-sig')
    data = json.loads(file_content)

    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        if not all(isinstance(item, dict) for item in data):
            raise ValueError("JSON array must contain only objects")
        return data
    raise ValueError("JSON must contain an object or array of objects")
