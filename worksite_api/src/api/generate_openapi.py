import json
import os

from src.api.main import app

# Get the OpenAPI schema (note: all REST routes are under /api/v1)
openapi_schema = app.openapi()

# Document the cache key layout used by the cache endpoints
openapi_schema["x-cache-key-format"] = {
    "format": "<table>:<operation>:<columns>",
    "example": "profiles:select:*",
    "notes": "Filter values are not part of the key; writes clear every key with the table prefix.",
}

# Write to file
output_dir = "interfaces"
os.makedirs(output_dir, exist_ok=True)
output_path = os.path.join(output_dir, "openapi.json")

with open(output_path, "w") as f:
    json.dump(openapi_schema, f, indent=2)
