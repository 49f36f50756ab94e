from OhaoCapture.ocr.preprocess import enhance_contrast, preprocess_for_ocr, sharpen
