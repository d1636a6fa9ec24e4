"""
DROWSY Inference — Pipeline frame → decisão em tempo real (drowsy / active).

Módulos:
- config: dataclasses por componente + pipeline_config.json
- errors: FrameDecodeError, InferenceError, ModelLoadError
- frame_normalizer_rt: RawFrame (YUV/RGB/BGR) → slice float32 3*S*S channel-major
- window_buffer_rt: WindowBuffer (W frames, uma janela em voo) + TensorAssembler
- model_loader: sessão ONNX, InferenceInvoker (logit → sigmoide com temperatura)
- temporal_smoother_rt: histórico + políticas NONE / THRESHOLD / HYSTERESIS
- face_oracle_rt: gate opcional de presença de face (BlazeFace ONNX)
- pipeline_rt: PipelineController (orquestração por frame, fallback)
- run_realtime_demo: Loop câmera → overlay ACTIVE/DROWSY (webcam / picamera2)
- offline_eval: Replay de logits gravados e métricas (dev-only, requer scikit-learn)
"""
