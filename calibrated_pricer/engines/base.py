import abc


class ReferenceModelPricer(abc.ABC):
    """Interface of the pricer providing the calibration targets (e.g. SABR).

    ``market`` carries the curves and the reference-model data. The engines are
    stateless: one instance can be shared by concurrent valuations.
    """

    @abc.abstractmethod
    def price(self, instrument, market):
        raise NotImplementedError

    @abc.abstractmethod
    def sensitivity(self, instrument, market):
        """Present value plus its derivatives w.r.t. the model parameters and the curves."""
        raise NotImplementedError


class TargetModelPricer(abc.ABC):
    """Interface of the pricer of the calibrated model (e.g. LMM).

    Unlike the reference pricer, the model parameters are passed explicitly since
    they change during the calibration.
    """

    @abc.abstractmethod
    def price(self, instrument, parameters, market):
        raise NotImplementedError

    @abc.abstractmethod
    def sensitivity(self, instrument, parameters, market):
        """Present value plus its derivatives w.r.t. the model parameters and the curves."""
        raise NotImplementedError
