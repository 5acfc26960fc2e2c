# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# students et buses doivent précéder les tables qui les référencent.

from schoolaccess.models.student import Student  # noqa: F401
from schoolaccess.models.bus import Bus  # noqa: F401
from schoolaccess.models.enrollment import LunchDetail, TransportDetail  # noqa: F401
from schoolaccess.models.attendance import ScanEvent  # noqa: F401
from schoolaccess.models.import_job import ImportJob  # noqa: F401
