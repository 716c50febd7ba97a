from typing import List
from pydantic import BaseModel, Field

class PredictRequest(BaseModel):
    top_k: int = Field(3, ge=1, le=30)

class SpectrogramRequest(BaseModel):
    window_size_ms: float = Field(20.0, gt=0.0, le=100.0)
    step_size_ms: float = Field(10.0, gt=0.0, le=100.0)
    include_image: bool = True

class StreamConfig(BaseModel):
    sample_rate: int = Field(16000, ge=8000, le=48000)
    duration: float = Field(1.0, gt=0.0, le=10.0)
    top_k: int = Field(3, ge=1, le=30)

class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")

class ConfigResponse(BaseModel):
    sample_rate: int
    duration: float
    window_size_ms: float
    step_size_ms: float
    num_classes: int

class LabelsResponse(BaseModel):
    labels: List[str] = Field(..., description="Labels ordered by class index")

class Prediction(BaseModel):
    label: str = Field(..., description="Predicted word")
    confidence: float = Field(
        ..., ge=0.0, le=1.0, description="Probability for the label"
    )

class SpectrogramResponse(BaseModel):
    image: str
    features: List[List[float]]
    shape: List[int]
    time_ticks: List[float]
    freq_ticks: List[float]
    level_ticks: List[float]
    sample_rate: int
    window_size_ms: float
    step_size_ms: float

class WindowSpectrogram(SpectrogramResponse):
    window_start: float
    window_end: float

class PredictResponse(BaseModel):
    top_prediction: Prediction
    top_k: List[Prediction]
    spectrogram: WindowSpectrogram
    spectrograms: List[WindowSpectrogram]
