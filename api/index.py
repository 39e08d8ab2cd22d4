import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stocky.api import app  # noqa: E402

handler = Mangum(app)
