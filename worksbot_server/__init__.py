"""Works Bot Server: OAuth credential lifecycle for a NAVER WORKS bot."""
