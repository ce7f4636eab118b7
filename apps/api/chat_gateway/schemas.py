from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from .llm.fragments import ChatInput
from .rag.contracts import RawDocument

class ChatReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    system: Optional[str] = None
    user_prompt: Optional[str] = Field(default=None, alias="userPrompt")

    def to_input(self) -> ChatInput:
        return ChatInput(user_prompt=self.user_prompt or "", system=self.system or "")

class ChatResp(BaseModel):
    text: str

class DocIngestReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    doc_id: str = Field(alias="docId")
    title: str = ""
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> RawDocument:
        return RawDocument(doc_id=self.doc_id, title=self.title, text=self.text, metadata=dict(self.metadata))
