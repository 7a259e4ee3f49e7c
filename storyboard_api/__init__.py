"""
스토리보드 생성 서비스
"""
