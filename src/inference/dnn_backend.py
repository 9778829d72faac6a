"""
OpenCV DNN backend running MobileNet-SSD (Caffe).

Lighter than YOLO and needs nothing beyond OpenCV, at the cost of accuracy.
Expects the MobileNetSSD_deploy prototxt/caffemodel pair on disk.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

from models.detection import Detection
from .backend import InferenceBackend

# MobileNet-SSD classes (21 total, VOC)
MOBILENET_CLASSES = [
    "background", "aeroplane", "bicycle", "bird", "boat", "bottle",
    "bus", "car", "cat", "chair", "cow", "diningtable", "dog", "horse",
    "motorbike", "person", "pottedplant", "sheep", "sofa", "train", "tvmonitor",
]

INPUT_SIZE = (300, 300)
BLOB_SCALE = 0.007843
BLOB_MEAN = 127.5


@dataclass(frozen=True)
class DnnSsdConfig:
    prototxt: str
    caffemodel: str
    conf_threshold: float = 0.5


class OpenCvDnnBackend(InferenceBackend):
    def __init__(self, cfg: DnnSsdConfig):
        self.cfg = cfg
        for path in (cfg.prototxt, cfg.caffemodel):
            if not os.path.exists(path):
                raise FileNotFoundError(f"MobileNet-SSD model file not found: {path}")
        self._net = cv2.dnn.readNetFromCaffe(cfg.prototxt, cfg.caffemodel)

    def detect(self, frame: np.ndarray) -> List[Detection]:
        height, width = frame.shape[:2]
        blob = cv2.dnn.blobFromImage(
            cv2.resize(frame, INPUT_SIZE),
            BLOB_SCALE,
            INPUT_SIZE,
            BLOB_MEAN,
        )
        self._net.setInput(blob)
        raw = self._net.forward()

        out: List[Detection] = []
        for i in range(raw.shape[2]):
            confidence = float(raw[0, 0, i, 2])
            if confidence < self.cfg.conf_threshold:
                continue

            class_index = int(raw[0, 0, i, 1])
            if not 0 <= class_index < len(MOBILENET_CLASSES):
                continue

            # Normalized corners, clipped to the frame
            x1, y1, x2, y2 = np.clip(raw[0, 0, i, 3:7], 0.0, 1.0) * [width, height, width, height]
            out.append(
                Detection.from_xyxy(
                    label=MOBILENET_CLASSES[class_index],
                    confidence=min(confidence, 1.0),
                    x1=float(x1),
                    y1=float(y1),
                    x2=float(x2),
                    y2=float(y2),
                )
            )

        return out
