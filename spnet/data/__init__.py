from .dataset import DatasetKind, Dataset, DataHandler
