from flask import Blueprint, request, jsonify
from zellow.services.tracking_service import gift_tracking_view
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('tracking', __name__)


@bp.route('/api/track/gift', methods=['GET'])
def track_gift():
    # Public: the token is the only credential
    return jsonify(gift_tracking_view(request.args.get('token')))
