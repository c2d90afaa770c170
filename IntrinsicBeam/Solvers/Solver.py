import pickle


class Solver:
    """Base solver class with save/load functionality."""
    @staticmethod
    def save(obj, filename):
        """Pickle a System (or an assembly, or a state history) to ``filename.pkl``."""
        if not filename.endswith('.pkl'):
            filename += '.pkl'
        with open(filename, 'wb') as file:
            pickle.dump(obj, file)
        return filename

    @staticmethod
    def load(filename):
        if not filename.endswith('.pkl'):
            filename += '.pkl'
        with open(filename, 'rb') as file:
            return pickle.load(file)
