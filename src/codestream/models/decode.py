"""
Decode Result Model
===================

Outcome of one on-demand region decode.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DecodeResult(BaseModel):
    """
    Decoded symbol, or an explicit not-found marker.
    
    Attributes:
        found: Whether a symbol was recognized
        text: Decoded text content
        raw: Raw symbol bytes
        format: Symbology name (e.g. "QRCode", "Code128")
        frame_id: Id of the frame the region was cut from
    """
    
    model_config = ConfigDict(ser_json_bytes="base64")
    
    found: bool = Field(..., description="Whether a symbol was recognized")
    text: Optional[str] = Field(default=None, description="Decoded text")
    raw: Optional[bytes] = Field(default=None, description="Raw symbol bytes")
    format: Optional[str] = Field(default=None, description="Symbology name")
    frame_id: Optional[int] = Field(default=None, description="Source frame id")
    
    @classmethod
    def not_found(cls, frame_id: Optional[int] = None) -> "DecodeResult":
        return cls(found=False, frame_id=frame_id)
