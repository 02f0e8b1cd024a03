from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime

class GraphRequestBody(BaseModel):
    query: str
    variables: Optional[Dict[str, Any]] = None

class GraphErrorItem(BaseModel):
    model_config = ConfigDict(extra="allow")  # locations, path, extensions...

    message: str = ""

class GraphResponse(BaseModel):
    data: Any = None
    errors: List[GraphErrorItem] = []

class RunReport(BaseModel):
    generated_at: datetime
    endpoint: str
    data: Any = None
