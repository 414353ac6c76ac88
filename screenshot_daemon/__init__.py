"""
screenshot-daemon: 주기적으로 전체 화면을 캡처하여 날짜별 디렉토리에 PNG로 저장합니다.
"""

__version__ = "0.1.0"
