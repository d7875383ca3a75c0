"""Smoke check: send one short exam snippet through GeminiOracle and parse the reply.

Run from backend/: python scripts/check_oracle.py
"""
import os, asyncio, sys
sys.path.insert(0, os.getcwd())
from app.config import GEMINI_API_KEY
from app.services.ai_response import parse_questions_response
from app.services.extraction import DEFAULT_EXTRACTION_PROMPT
from app.services.llm import GeminiOracle

print('GEMINI_API_KEY set?', bool(GEMINI_API_KEY))

SAMPLE = "1. What is 2 + 2?\nA. 3\nB. 4\nC. 5\nAnswer: B"


async def check():
    oracle = GeminiOracle()
    try:
        reply = await oracle.complete(DEFAULT_EXTRACTION_PROMPT, SAMPLE)
        print('Oracle ok, reply len=', len(reply))
        print(reply[:400])
        questions = parse_questions_response(reply)
        print('Parsed questions:', len(questions))
    except Exception as e:
        print('Oracle error:', repr(e))

if __name__ == '__main__':
    asyncio.run(check())
