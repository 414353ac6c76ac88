"""
이미지 처리 패키지

- PixelNormalizer: packed 픽셀 → 8bit RGB 행 변환
- PngEncoder: RGB 행 스트림 → PNG 파일
"""
