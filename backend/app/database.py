"""
Database connection - MongoDB async (Motor).
"""

from motor.motor_asyncio import AsyncIOMotorClient

from app.config import MONGO_URL, DB_NAME

# Motor connects lazily, so importing this module does not touch the network
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]
